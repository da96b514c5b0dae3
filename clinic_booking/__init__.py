"""
Clinic Booking Service

A FastAPI service for booking medical appointments against doctors' time slots,
with conflict-free slot reservation, an appointment status lifecycle and
best-effort email notifications.
"""

__version__ = "1.0.0"
