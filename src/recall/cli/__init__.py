"""recall command line interface."""
