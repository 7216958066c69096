"""cronspine command line interface."""
