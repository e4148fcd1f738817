"""Click commands for the kinder CLI, registered in main.py."""
