"""Allow running as: python -m signal_executor [--config path]."""

from signal_executor.lifecycle.runner import main

main()
