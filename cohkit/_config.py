import os

# Worker threads run their own FFTs; keep BLAS from spawning more on top.
for _var in ("OPENBLAS_NUM_THREADS", "MKL_NUM_THREADS", "OMP_NUM_THREADS"):
    os.environ.setdefault(_var, "1")

DEFAULT_NFFT = 512
DEFAULT_WINDOW = "hanning"
NUM_WORKERS_ENV = "COHKIT_NUM_WORKERS"


def default_num_workers() -> int:
    """
    Number of worker threads used when the caller does not pass one.

    Reads ``COHKIT_NUM_WORKERS`` if set, otherwise uses ``os.cpu_count()``.
    """
    raw = os.environ.get(NUM_WORKERS_ENV)
    if raw is None or raw.strip() == "":
        return max(1, os.cpu_count() or 1)
    try:
        n = int(raw)
    except ValueError as exc:
        raise ValueError(f"{NUM_WORKERS_ENV} must be an integer, got {raw!r}.") from exc
    if n < 1:
        raise ValueError(f"{NUM_WORKERS_ENV} must be >= 1, got {n}.")
    return n
