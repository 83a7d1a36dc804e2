from topic_operator.server import main

main()
