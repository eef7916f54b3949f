from ngrok_tunnel_controller.main import main

main()
