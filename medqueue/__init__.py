"""MedQueue Python Client

This package implements the client side of the clinic patient-queue system. Patients
book a consultation and follow their live position in a doctor's queue; doctors watch
their incoming queue and start, complete or remove patients.

Key Features:
- Persistent Socket.IO connection with bounded reconnection
- Room-scoped subscriptions for patient and doctor traffic
- Reconciliation of server-pushed queue snapshots and lifecycle events
- Request/response correlation for acknowledged commands
- Local wait-time countdown between server estimates
"""

__version__ = "0.3.0"
