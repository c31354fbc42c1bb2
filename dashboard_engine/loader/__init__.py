from .data_loader import DataLoader, compute_max_concurrent, request_signature

__all__ = ["DataLoader", "compute_max_concurrent", "request_signature"]
