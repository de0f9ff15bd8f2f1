from fastapi import APIRouter

from manuflow.api.v1.endpoints import auth, companies, customers, leads, roles, users

api_router = APIRouter(prefix="/api/v1")

# Public
api_router.include_router(auth.router, tags=["Auth"])

# CRM
api_router.include_router(companies.router, tags=["Companies"])
api_router.include_router(customers.router, tags=["Customers"])
api_router.include_router(leads.router, tags=["Leads"])

# Administration
api_router.include_router(users.router, tags=["Users"])
api_router.include_router(roles.router, tags=["Roles"])
