# orderflow/api/__init__.py
