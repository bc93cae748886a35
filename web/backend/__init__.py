"""DeskRat web backend (FastAPI)"""
