"""Business services: state machine, processor, retry scheduler and maintenance."""
