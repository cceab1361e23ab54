# audioscribe/audio/__init__.py
# ==============================
# Audio Layer
#
#   source.py   — upload handle, supported types
#   probe.py    — duration detection (never raises)
#   decoder.py  — bytes → float samples per channel
#   chunker.py  — fixed-duration slicing
#   wav.py      — PCM16 WAV encode/decode
