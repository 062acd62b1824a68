"""Network binds and endpoints, control messages, UDP offload helpers and socket options."""