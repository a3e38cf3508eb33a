"""Client-side state synchronization for the CampusBot robot delivery service."""
