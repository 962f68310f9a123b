"""Service layer for SalonBook. Business logic lives here; routes stay thin."""
