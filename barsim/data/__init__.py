"""Data Layer - resampling and historical bar ingestion"""
from .resampler import resample, resample_frame
from .loader import load_bars_csv, frame_to_bars, bars_to_frame

__all__ = [
    'resample',
    'resample_frame',
    'load_bars_csv',
    'frame_to_bars',
    'bars_to_frame',
]
