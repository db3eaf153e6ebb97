"""Service layer: diffing, per-pair sync jobs and the cycle scheduler."""
