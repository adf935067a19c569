from .qr import make_qr_png, qr_data_url

__all__ = ["make_qr_png", "qr_data_url"]
