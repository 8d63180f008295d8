"""Invoice lifecycle and hybrid (off-chain + on-chain) funding engine."""

__version__ = "0.1.0"
