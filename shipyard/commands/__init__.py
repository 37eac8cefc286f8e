"""
shipyard.commands - CLI command handlers.

Each handler takes the parsed argparse Namespace and returns an exit code.
"""
