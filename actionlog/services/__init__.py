"""Service layer: business rules, authorization and commits live here."""
