"""
Background Removal Pipeline

Single-flight orchestration across two backends:
1. local  - in-process rembg inference
2. remote - create-then-poll job on the predictions API
"""
