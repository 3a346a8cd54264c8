from .sequencer import SleepSequencer

__all__ = ["SleepSequencer"]
