"""Stage wiring: plain stage functions, CLI controllers and the Prefect flow."""
