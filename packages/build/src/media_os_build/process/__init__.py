from .runner import CommandSpec, ProcessOutcome, ProcessRunner, tail_lines

__all__ = ["CommandSpec", "ProcessOutcome", "ProcessRunner", "tail_lines"]
