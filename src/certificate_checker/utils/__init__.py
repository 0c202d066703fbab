# src/certificate_checker/utils/__init__.py
