"""Room participants and per-user room visibility."""
