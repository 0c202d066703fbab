# src/certificate_checker/__init__.py

"""Certificate checker: validate X.509 certificates from hosts or files."""

__version__ = "1.0.0"
