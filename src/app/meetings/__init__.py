"""Meeting ingestion module -- persistence models, repository, and the
recording pipeline that turns a completed Tencent Meeting recording into
transcripts and per-participant summaries.
"""
