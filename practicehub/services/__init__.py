"""Service layer — owns business rules, transactions and commits."""
