"""Claude access and Server-Sent Events framing."""
