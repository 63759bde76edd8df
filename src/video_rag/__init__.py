"""Video transcript RAG pipeline.

This package fetches YouTube video transcripts through an asynchronous
scraping job, registers them with the Gemini File API, and answers questions
grounded in the uploaded transcripts.
"""
