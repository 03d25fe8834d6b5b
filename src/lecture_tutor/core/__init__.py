"""Models, events and commands shared by the logic layer and the controller."""
