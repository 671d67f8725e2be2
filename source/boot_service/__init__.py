"""Network boot service that runs inside the provisioner VM."""
