"""auth/ -- Authentication and authorization package for TrainingCRM.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/. Only auth/dependencies.py (the FastAPI seam)
imports from persistence/, to hand each request's actor to its UnitOfWork.
api/ imports from auth/, not the other way around.
"""
