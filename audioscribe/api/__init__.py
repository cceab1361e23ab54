# audioscribe/api/__init__.py
# ============================
# API Layer
#
#   POST /api/v1/transcribe — multipart upload (audio_file, user_id, language)
