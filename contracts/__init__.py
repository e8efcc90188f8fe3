"""Contracts for the Lambda profiler.

The contracts package defines:
- request-scoped value objects (tenant, pricing, credentials, window, results)
- the error taxonomy and its HTTP mapping
- request-scoped AWS client containers and their factory

Main exports:
- Tenant, PricingProfile, DelegatedCredentials, FunctionWindow, FunctionMetricResult
- ProfilerError and its subclasses
- ControlPlaneServices, TenantServices, RequestContext, ServicesFactory
"""

from contracts import profiler_contracts
from contracts import services as services_module

# Explicit re-exports to satisfy ruff F401
__all__ = [
    "AuthorizationError",
    "ControlPlaneServices",
    "DelegatedCredentials",
    "FatalInfrastructureError",
    "FunctionMetricResult",
    "FunctionWindow",
    "PricingProfile",
    "ProfilerError",
    "RequestContext",
    "RequestTimeoutError",
    "RequestValidationError",
    "ServicesFactory",
    "Tenant",
    "TenantServices",
]

# Re-export for convenience
AuthorizationError = profiler_contracts.AuthorizationError
DelegatedCredentials = profiler_contracts.DelegatedCredentials
FatalInfrastructureError = profiler_contracts.FatalInfrastructureError
FunctionMetricResult = profiler_contracts.FunctionMetricResult
FunctionWindow = profiler_contracts.FunctionWindow
PricingProfile = profiler_contracts.PricingProfile
ProfilerError = profiler_contracts.ProfilerError
RequestTimeoutError = profiler_contracts.RequestTimeoutError
RequestValidationError = profiler_contracts.RequestValidationError
Tenant = profiler_contracts.Tenant

ControlPlaneServices = services_module.ControlPlaneServices
RequestContext = services_module.RequestContext
ServicesFactory = services_module.ServicesFactory
TenantServices = services_module.TenantServices
