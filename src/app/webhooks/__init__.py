"""Tencent Meeting webhook ingestion -- crypto, envelope schemas, dispatch,
handlers and the background worker.
"""
