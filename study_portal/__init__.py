"""Study Portal: storage and account services for shared course material."""
