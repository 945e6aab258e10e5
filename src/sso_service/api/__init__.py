"""HTTP routes: public SSO login endpoints and connection administration."""
