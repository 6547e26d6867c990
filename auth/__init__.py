"""auth/ -- Skill-based authentication and authorization core for LevelGate.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way
around. auth/dependencies.py is the one FastAPI-aware module, kept here
because it is part of the dependency injection surface the routes consume.
"""
