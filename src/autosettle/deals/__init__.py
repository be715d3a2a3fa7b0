"""Deal desk module -- the Deal aggregate, its financials and next actions.

Provides Pydantic schemas (Deal, Service, PaymentSchedule, Checklist and the
per-type service details), the quote and settlement calculators, the
next-action engine, dashboard aggregation, SQLAlchemy models and
DealRepository for async CRUD.
"""
