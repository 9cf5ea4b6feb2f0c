"""Employee directory sync: Google Sheet roster -> Supabase directory."""
