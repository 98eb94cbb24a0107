"""Meeting scheduling between trainers and clients.

Scheduling (persistent, overlap-checked) lives in scheduling.py and
repository.py; live-room coordination lives in the rooms subpackage.
"""
