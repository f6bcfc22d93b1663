"""
Main entry point for policy-distiller when run as a module.

Allows execution via: python -m policy_distiller

policy_distiller/src/policy_distiller/__main__.py
"""

from .cli import main

if __name__ == "__main__":
    main()
