"""Client profiles: staff-facing lists and the client's own profile and KPIs."""
