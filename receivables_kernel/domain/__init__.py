"""Pure domain core: value helpers, derived statuses, DTOs, clock. Zero I/O."""
