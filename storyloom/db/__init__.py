"""Supabase-backed data access for book content and embedded chunks."""
