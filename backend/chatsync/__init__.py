"""chatsync: real-time message synchronization for chat rooms."""
