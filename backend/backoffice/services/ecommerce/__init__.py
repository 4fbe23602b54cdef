# Online store integrations. Tiendanube is the only platform wired in.
