# Command-line entry points and external tool wrappers.
