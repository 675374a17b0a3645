"""
Ingress Anubis Operator
Wraps Ingresses of the anubis class with an Anubis deployment and a rewritten Ingress
"""

__version__ = '0.1.0'
