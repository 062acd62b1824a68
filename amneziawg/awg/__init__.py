"""Tag-based junk packet generators, the tag parser, handshake junk and obfuscation settings."""